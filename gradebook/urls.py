from django.urls import path
from . import views

app_name = 'gradebook'

urlpatterns = [
    # Report cards
    path('reports/', views.report_list, name='report_list'),
    path('reports/generate/', views.generate_class, name='generate_class'),
    path('reports/generate/async/', views.generate_class_async, name='generate_class_async'),
    path('reports/students/<int:student_id>/generate/', views.generate_student, name='generate_student'),
    path('reports/publish/', views.publish_class, name='publish_class'),
    path('reports/<uuid:pk>/', views.report_detail, name='report_detail'),
    path('reports/<uuid:pk>/publish/', views.publish_version, name='publish_version'),

    # Results settings
    path('settings/results/', views.results_settings, name='results_settings'),
]
