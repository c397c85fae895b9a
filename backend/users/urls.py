from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from .views import register_api_view, user_detail_view
from .serializers import CustomTokenObtainPairSerializer


urlpatterns = [
    path('register/', register_api_view, name='auth_register'),

    # Simple JWT login, looked up by email
    path(
        'login/',
        TokenObtainPairView.as_view(serializer_class=CustomTokenObtainPairSerializer),
        name='token_obtain_pair'
    ),
    path('token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('user/', user_detail_view, name='user_detail'),
]
