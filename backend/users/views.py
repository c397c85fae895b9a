from rest_framework import generics, permissions
from .serializers import UserRegistrationSerializer, UserDetailsSerializer


class RegisterAPIView(generics.CreateAPIView):
    serializer_class = UserRegistrationSerializer
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

register_api_view = RegisterAPIView.as_view()


class UserDetailView(generics.RetrieveAPIView):
    serializer_class = UserDetailsSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self):
        return self.request.user

user_detail_view = UserDetailView.as_view()
