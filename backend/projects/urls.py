# projects/urls.py

from django.urls import path
from .views import list_create_view, retrieve_update_destroy_view

urlpatterns = [
    path('', list_create_view, name='project-list-create'),
    path('<uuid:pk>/', retrieve_update_destroy_view, name='project-detail'),
]
