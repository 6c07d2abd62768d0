from django.urls import path
from .views import ArtifactDownloadView, JobDetailView, UploadAndCreateJobView

urlpatterns = [
    path("jobs/", UploadAndCreateJobView.as_view(), name="upload_create_job"),
    path("jobs/<uuid:job_id>/", JobDetailView.as_view(), name="job_detail"),
    path("files/<str:file_name>", ArtifactDownloadView.as_view(), name="artifact_download"),
]
