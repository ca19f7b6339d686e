from django.urls import include, path


urlpatterns = [
    path("chart/", include("chartscan.urls")),
]
