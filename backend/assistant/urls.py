from django.urls import path
from . import views

urlpatterns = [
    path('chat/', views.chat_view, name='ai-chat'),
    path('conversations/', views.conversation_list_view, name='ai-conversation-list'),
    path('conversations/<uuid:pk>/', views.conversation_detail_view, name='ai-conversation-detail'),

    path('context/', views.context_view, name='ai-context'),
    path('context/history/', views.context_history_view, name='ai-context-history'),
    path('context/<uuid:pk>/', views.context_detail_view, name='ai-context-detail'),
    path('context/<uuid:pk>/restore/', views.context_restore_view, name='ai-context-restore'),

    path('similar-tasks/', views.similar_tasks_view, name='ai-similar-tasks'),
    path('execution-insights/<uuid:task_id>/', views.execution_insights_view, name='ai-execution-insights'),
    path('enrich/', views.enrich_view, name='ai-enrich'),
    path('enrich/apply/', views.apply_enrichment_view, name='ai-enrich-apply'),
    path('decompose/', views.decompose_view, name='ai-decompose'),
    path('research/', views.research_view, name='ai-research'),
    path('draft/', views.draft_view, name='ai-draft'),
]
