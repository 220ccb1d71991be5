from django.apps import AppConfig


class ExporterConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'exporter'
    verbose_name = 'ClickHouse to Kafka exporter'
