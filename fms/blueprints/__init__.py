"""
FMS Execution Engine
Blueprint registry.
"""

from fms.blueprints.health_bp import health_bp
from fms.blueprints.objection_bp import objection_bp
from fms.blueprints.project_bp import project_bp
from fms.blueprints.score_log_bp import score_log_bp
from fms.blueprints.template_bp import template_bp

ALL_BLUEPRINTS = (
    health_bp,
    template_bp,
    project_bp,
    objection_bp,
    score_log_bp,
)
