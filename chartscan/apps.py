from django.apps import AppConfig


class ChartscanConfig(AppConfig):
    name = "chartscan"
    verbose_name = "Chart screenshot analyzer"
