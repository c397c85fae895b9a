from django.urls import path
from .views import list_create_view, retrieve_update_destroy_view, complete_view

urlpatterns = [
    # GET and POST (list tasks, create a task)
    path('', list_create_view, name='task-list-create'),

    # GET, PUT, PATCH, DELETE (detail and manipulation)
    path('<uuid:pk>/', retrieve_update_destroy_view, name='task-detail'),

    path('<uuid:pk>/complete/', complete_view, name='task-complete'),
]
