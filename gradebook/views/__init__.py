from .reports import (
    generate_class, generate_class_async, generate_student,
    publish_class, publish_version, report_detail, report_list,
)
from .results_settings import results_settings
