from flask import request, jsonify, send_file

from . import reporting_bp, dashboard_bp
from ..models.user import Permission
from ..schemas.finance_schemas import ReportRequestSchema
from ..security import current_actor, permission_required, staff_required
from ..services.reporting_service import ReportingService, DashboardService


@reporting_bp.route("", methods=["GET"])
@permission_required(Permission.MANAGE_FINANCES)
def get_report():
    """
    Get report data or download a report file
    ---
    parameters:
      - in: query
        schema: ReportRequestSchema
    responses:
      200:
        description: Report data (view_type=DISPLAY) or a PDF/CSV/Excel file
    """
    params = ReportRequestSchema().load(request.args)
    report_data = ReportingService.get_report_data(params)

    if params['view_type'] == 'DISPLAY':
        return jsonify({
            "title": report_data['title'],
            "data": report_data['items'],
            "summary": report_data['summary'],
            "metadata": {
                "report_type": params['report_type'],
                "start_date": params['start_date'].isoformat() if params['start_date'] else None,
                "end_date": params['end_date'].isoformat() if params['end_date'] else None,
                "total_items": len(report_data['items'])
            }
        }), 200

    file_data = ReportingService.generate_report_file(report_data, params['view_type'])
    mimetype, filename = ReportingService.report_filename(params['report_type'], params['view_type'])
    return send_file(
        file_data,
        mimetype=mimetype,
        as_attachment=True,
        download_name=filename
    )


@dashboard_bp.route("/stats", methods=["GET"])
@staff_required
def dashboard_stats():
    """Client counts, session counts, upcoming/recent sessions and (with finance access) money totals."""
    return jsonify(DashboardService.get_stats(actor=current_actor())), 200
