from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('projects', '0001_initial'),
        ('tasks', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Conversation',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(blank=True, default='', max_length=255)),
                ('type', models.CharField(choices=[('general', 'General'), ('decompose', 'Decompose'), ('research', 'Research'), ('draft', 'Draft'), ('planning', 'Planning'), ('coaching', 'Coaching')], default='general', max_length=20)),
                ('is_archived', models.BooleanField(default=False)),
                ('message_count', models.PositiveIntegerField(default=0)),
                ('total_tokens', models.PositiveIntegerField(default=0)),
                ('last_message_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('project', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='conversations', to='projects.project')),
                ('task', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='conversations', to='tasks.task')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='conversations', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-updated_at'],
            },
        ),
        migrations.CreateModel(
            name='Message',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('role', models.CharField(choices=[('user', 'User'), ('assistant', 'Assistant'), ('system', 'System')], max_length=20)),
                ('content', models.TextField()),
                ('input_tokens', models.PositiveIntegerField(blank=True, null=True)),
                ('output_tokens', models.PositiveIntegerField(blank=True, null=True)),
                ('model', models.CharField(blank=True, default='', max_length=100)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('conversation', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='messages', to='assistant.conversation')),
            ],
            options={
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='AIArtifact',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('type', models.CharField(choices=[('research', 'Research'), ('draft', 'Draft'), ('outline', 'Outline'), ('summary', 'Summary'), ('suggestion', 'Suggestion'), ('note', 'Note')], max_length=20)),
                ('title', models.CharField(blank=True, default='', max_length=255)),
                ('content', models.TextField()),
                ('version', models.PositiveIntegerField(default=1)),
                ('is_current', models.BooleanField(default=True)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('conversation', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='artifacts', to='assistant.conversation')),
                ('task', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='ai_artifacts', to='tasks.task')),
            ],
            options={
                'ordering': ['-updated_at'],
            },
        ),
        migrations.AddConstraint(
            model_name='aiartifact',
            constraint=models.UniqueConstraint(condition=models.Q(('is_current', True)), fields=('task', 'type'), name='one_current_artifact_per_task_type'),
        ),
        migrations.AddConstraint(
            model_name='aiartifact',
            constraint=models.UniqueConstraint(fields=('task', 'type', 'version'), name='unique_artifact_version'),
        ),
        migrations.CreateModel(
            name='ExecutionHistory',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('original_estimated_minutes', models.PositiveIntegerField(blank=True, null=True)),
                ('final_actual_minutes', models.PositiveIntegerField(blank=True, null=True)),
                ('estimation_accuracy_ratio', models.FloatField(blank=True, null=True)),
                ('original_subtask_count', models.PositiveIntegerField(default=0)),
                ('subtasks_added_mid_execution', models.PositiveIntegerField(default=0)),
                ('added_subtask_titles', models.JSONField(blank=True, default=list)),
                ('stall_events', models.JSONField(blank=True, default=list)),
                ('total_stall_time_minutes', models.PositiveIntegerField(default=0)),
                ('outcome', models.CharField(choices=[('completed', 'Completed'), ('completed_late', 'Completed late'), ('abandoned', 'Abandoned'), ('delegated', 'Delegated'), ('deferred', 'Deferred')], max_length=20)),
                ('completion_date', models.DateTimeField(blank=True, null=True)),
                ('days_overdue', models.PositiveIntegerField(blank=True, null=True)),
                ('task_category', models.CharField(blank=True, default='general', max_length=50)),
                ('keyword_fingerprint', models.JSONField(blank=True, default=list)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('task', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='execution_history', to='tasks.task')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='execution_history', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-completion_date'],
                'verbose_name_plural': 'execution history',
            },
        ),
        migrations.CreateModel(
            name='TaskEnrichmentProposal',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('proposed_title', models.CharField(blank=True, default='', max_length=500)),
                ('proposed_description', models.TextField(blank=True, default='')),
                ('proposed_due_date', models.DateTimeField(blank=True, null=True)),
                ('proposed_estimated_minutes', models.PositiveIntegerField(blank=True, null=True)),
                ('proposed_priority', models.CharField(choices=[('high', 'High'), ('medium', 'Medium'), ('low', 'Low'), ('none', 'None')], default='none', max_length=10)),
                ('proposed_subtasks', models.JSONField(blank=True, default=list)),
                ('similarity_analysis', models.JSONField(blank=True, default=dict)),
                ('insights', models.JSONField(blank=True, default=dict)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('accepted', 'Accepted'), ('rejected', 'Rejected')], default='pending', max_length=10)),
                ('accepted_fields', models.JSONField(blank=True, default=list)),
                ('user_modifications', models.JSONField(blank=True, null=True)),
                ('ai_model', models.CharField(blank=True, default='', max_length=100)),
                ('input_tokens', models.PositiveIntegerField(default=0)),
                ('output_tokens', models.PositiveIntegerField(default=0)),
                ('processing_time_ms', models.PositiveIntegerField(default=0)),
                ('responded_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('task', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='enrichment_proposals', to='tasks.task')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='enrichment_proposals', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
    ]
