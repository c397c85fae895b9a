import logging
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.db import transaction
from django.utils import timezone
from rest_framework import generics, permissions, status
from rest_framework.response import Response
from .models import Task
from .serializers import TaskSerializer, TaskCompleteSerializer

logger = logging.getLogger(__name__)


def _local_day_bounds(user):
    """Start of today and start of tomorrow in the user's timezone, as aware datetimes."""
    try:
        tz = ZoneInfo(user.timezone or 'UTC')
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo('UTC')
    today = timezone.now().astimezone(tz).date()
    start = datetime.combine(today, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


class TaskListCreateView(generics.ListCreateAPIView):
    """
    GET: List the authenticated user's tasks.
        ?status=<status>       only that status (deleted tasks are never listed)
        ?projectId=<uuid>      only tasks in that project
        ?parentId=<uuid>       only subtasks of that task
        ?view=today|upcoming   open tasks due by the end of today / after today
    POST: Create a new task.
    """
    serializer_class = TaskSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        params = self.request.query_params
        qs = Task.objects.filter(user=self.request.user).exclude(status=Task.Status.DELETED)

        if params.get('status'):
            qs = qs.filter(status=params['status'])
        if params.get('projectId'):
            qs = qs.filter(project_id=params['projectId'])
        if params.get('parentId'):
            qs = qs.filter(parent_task_id=params['parentId'])

        view = params.get('view')
        if view in ('today', 'upcoming'):
            start, end = _local_day_bounds(self.request.user)
            qs = qs.exclude(status=Task.Status.COMPLETED)
            if view == 'today':
                qs = qs.filter(due_date__lt=end)
            else:
                qs = qs.filter(due_date__gte=end)
        return qs

list_create_view = TaskListCreateView.as_view()


class TaskRetrieveUpdateDestroyView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET, PUT, PATCH, DELETE for a specific task instance.
    DELETE is a soft delete: the row stays with status 'deleted'.
    """
    serializer_class = TaskSerializer
    permission_classes = [permissions.IsAuthenticated]

    # Other users' tasks are outside the queryset, so they answer 404.
    def get_queryset(self):
        return Task.objects.filter(user=self.request.user).exclude(status=Task.Status.DELETED)

    def perform_destroy(self, instance):
        instance.status = Task.Status.DELETED
        instance.save(update_fields=['status', 'updated_at'])

retrieve_update_destroy_view = TaskRetrieveUpdateDestroyView.as_view()


class TaskCompleteView(generics.GenericAPIView):
    """
    POST {complete, actualMinutes?, outcome?}: mark a task completed (or reopen it).

    Completing a task schedules the execution-history snapshot after the
    transaction commits. The snapshot never affects this response.
    """
    serializer_class = TaskCompleteSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Task.objects.filter(user=self.request.user).exclude(status=Task.Status.DELETED)

    def post(self, request, *args, **kwargs):
        task = self.get_object()
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        with transaction.atomic():
            if data['complete']:
                was_completed = task.is_completed
                task.mark_completed(actual_minutes=data.get('actualMinutes'))
                task.save()
                if not was_completed:
                    schedule_history_recording(task, request.user, data.get('outcome'))
            else:
                task.reopen()
                task.save()

        return Response(TaskSerializer(task, context={'request': request}).data, status=status.HTTP_200_OK)

complete_view = TaskCompleteView.as_view()


def schedule_history_recording(task, user, outcome=None):
    """Queue the execution-history job once the surrounding transaction commits."""
    task_id, user_id = str(task.id), user.id

    def enqueue():
        from assistant.ai_engine.celery_tasks import record_execution_history
        try:
            record_execution_history.delay(task_id, user_id, outcome)
        except Exception as exc:
            # broker outages must not surface on the completion request
            logger.error(f"Could not schedule execution history for Task {task_id}: {exc}")

    transaction.on_commit(enqueue)
