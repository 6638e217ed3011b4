from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='RemoteStoreConfig',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('base_url', models.URLField(help_text='Remote store base URL (without /rest/v1)')),
                ('api_key', models.CharField(help_text='Static API key, sent as apikey and bearer token', max_length=500)),
                ('timeout', models.IntegerField(default=30, help_text='Request timeout in seconds')),
                ('conflict_strategy', models.CharField(choices=[('last_write_wins', 'Last Write Wins'), ('client_wins', 'Client Wins'), ('server_wins', 'Server Wins'), ('manual', 'Manual')], default='last_write_wins', max_length=20)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Remote Store Configuration',
                'verbose_name_plural': 'Remote Store Configurations',
            },
        ),
        migrations.CreateModel(
            name='SyncQueue',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False)),
                ('operation_type', models.CharField(choices=[('create', 'Create'), ('update', 'Update'), ('delete', 'Delete')], max_length=10)),
                ('entity_type', models.CharField(choices=[('intervention', 'Intervention'), ('step', 'Step'), ('photo', 'Photo'), ('client', 'Client'), ('user', 'User'), ('task', 'Task')], max_length=20)),
                ('entity_id', models.CharField(max_length=100)),
                ('data', models.JSONField(blank=True, default=dict, help_text='Entity snapshot sent to the remote store')),
                ('dependencies', models.JSONField(blank=True, default=list, help_text='Entity ids that must exist remotely first')),
                ('timestamp_utc', models.DateTimeField(help_text='Local mutation time, the local write clock')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('completed', 'Completed'), ('abandoned', 'Abandoned')], default='pending', max_length=20)),
                ('retry_count', models.IntegerField(default=0)),
                ('max_retries', models.IntegerField(default=5)),
                ('error_message', models.TextField(blank=True, null=True)),
                ('scheduled_at', models.DateTimeField(default=django.utils.timezone.now, help_text='Earliest time the item may be claimed')),
                ('last_attempt_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Sync Queue Item',
                'verbose_name_plural': 'Sync Queue Items',
                'db_table': 'sync_queue',
                'ordering': ['timestamp_utc', 'id'],
                'indexes': [
                    models.Index(fields=['status', 'created_at'], name='idx_sync_queue_status_created'),
                    models.Index(fields=['entity_type', 'entity_id', 'created_at'], name='idx_sync_queue_entity_created'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SyncLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('level', models.CharField(choices=[('DEBUG', 'Debug'), ('INFO', 'Info'), ('WARNING', 'Warning'), ('ERROR', 'Error')], default='INFO', max_length=10)),
                ('message', models.TextField()),
                ('details', models.JSONField(blank=True, default=dict)),
                ('timestamp', models.DateTimeField(auto_now_add=True)),
                ('queue_item', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='logs', to='RemoteSync.syncqueue')),
            ],
            options={
                'verbose_name': 'Sync Log',
                'verbose_name_plural': 'Sync Logs',
                'ordering': ['-timestamp'],
            },
        ),
    ]
