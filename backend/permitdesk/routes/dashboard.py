from flask import Blueprint
from permitdesk import get_db
from permitdesk.decorators.auth import require_permissions
from permitdesk.services.dashboard import permit_summary, vms_summary
from permitdesk.services.policy import has_permissions, current_user_id, scoped_company_id

dashboard_bp = Blueprint('dashboard', __name__)


@dashboard_bp.get('/permits')
@require_permissions('dashboard.view')
def permits_dashboard():
    owner = None if has_permissions('permits.view_all') else current_user_id()
    return permit_summary(get_db(), owner)


@dashboard_bp.get('/vms')
@require_permissions('vms.dashboard.view')
def vms_dashboard():
    return vms_summary(get_db(), scoped_company_id())
