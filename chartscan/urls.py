from django.urls import path

from . import views

app_name = "chartscan"

urlpatterns = [
    path("api/pixels/", views.chart_pixels_api, name="chart_pixels_api"),
    path("api/decision/", views.trading_decision_api, name="trading_decision_api"),
    path("api/changes/", views.change_detection_api, name="change_detection_api"),
    path("api/changes/reset/", views.change_reset_api, name="change_reset_api"),
]
