# services/reporting_service.py
import csv
from datetime import datetime
from decimal import Decimal
from io import BytesIO, StringIO
from typing import Any, Dict
from xml.sax.saxutils import escape

import pandas as pd
from flask import current_app
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from ..models.client import Client
from ..models.payment import Payment
from ..models.training_session import TrainingSession
from .expense_service import ExpenseService
from .ledger_service import LedgerService, to_money
from .session_service import SessionService

REPORT_TYPES = ('LEDGER', 'PROFIT_AND_LOSS', 'CLIENT_BALANCES', 'SESSIONS')
VIEW_TYPES = ('DISPLAY', 'CSV', 'EXCEL', 'PDF')

MIMETYPES = {
    'PDF': ('application/pdf', '.pdf'),
    'CSV': ('text/csv', '.csv'),
    'EXCEL': ('application/vnd.openxmlformats-officedocument.spreadsheetml.sheet', '.xlsx'),
}


class ReportingService:
    """
    Builds report data as ``{'title', 'items', 'summary'}`` dictionaries and
    renders them to PDF, CSV or Excel for download.
    """

    @staticmethod
    def _generate_pdf(data: dict) -> BytesIO:
        """Generate PDF report"""
        buffer = BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=landscape(letter))
        elements = []
        styles = getSampleStyleSheet()

        elements.append(Paragraph(escape(data['title']), styles['Heading1']))
        elements.append(Spacer(1, 12))

        for key, value in data.get('summary', {}).items():
            elements.append(Paragraph(escape(f"{key.replace('_', ' ').title()}: {value}"), styles['Normal']))
        elements.append(Spacer(1, 12))

        if data['items']:
            headers = list(data['items'][0].keys())
            table_data = [headers]
            for item in data['items']:
                table_data.append([str(item[header]) for header in headers])

            table = Table(table_data, repeatRows=1)
            table.setStyle(TableStyle([
                ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
                ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
                ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
                ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
                ('FONTSIZE', (0, 0), (-1, 0), 10),
                ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
                ('BACKGROUND', (0, 1), (-1, -1), colors.beige),
                ('TEXTCOLOR', (0, 1), (-1, -1), colors.black),
                ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
                ('FONTSIZE', (0, 1), (-1, -1), 8),
                ('GRID', (0, 0), (-1, -1), 1, colors.black)
            ]))
            elements.append(table)
        else:
            elements.append(Paragraph("No data for the selected period.", styles['Italic']))

        doc.build(elements)
        buffer.seek(0)
        return buffer

    @staticmethod
    def _generate_csv(data: dict) -> BytesIO:
        """Generate CSV report"""
        text = StringIO()
        if data['items']:
            headers = list(data['items'][0].keys())
            writer = csv.DictWriter(text, fieldnames=headers)
            writer.writeheader()
            writer.writerows(data['items'])

        buffer = BytesIO(text.getvalue().encode('utf-8'))
        buffer.seek(0)
        return buffer

    @staticmethod
    def _generate_excel(data: dict) -> BytesIO:
        """Generate Excel report"""
        buffer = BytesIO()

        with pd.ExcelWriter(buffer, engine='xlsxwriter') as writer:
            df = pd.DataFrame(data['items'])
            df.to_excel(writer, sheet_name='Data', index=False)

            workbook = writer.book
            worksheet = writer.sheets['Data']
            header_format = workbook.add_format({
                'bold': True,
                'bg_color': '#4F81BD',
                'font_color': 'white'
            })
            for col_num, value in enumerate(df.columns.values):
                worksheet.write(0, col_num, value, header_format)
                worksheet.set_column(col_num, col_num, 18)

            if data.get('summary'):
                summary = {key.replace('_', ' ').title(): value for key, value in data['summary'].items()}
                pd.DataFrame([summary]).to_excel(writer, sheet_name='Summary', index=False)

        buffer.seek(0)
        return buffer

    @staticmethod
    def generate_report_file(data: dict, format_type: str) -> BytesIO:
        """Generate report file in specified format"""
        if format_type == 'PDF':
            return ReportingService._generate_pdf(data)
        elif format_type == 'CSV':
            return ReportingService._generate_csv(data)
        else:  # EXCEL
            return ReportingService._generate_excel(data)

    @staticmethod
    def report_filename(report_type: str, format_type: str):
        mimetype, extension = MIMETYPES[format_type]
        return mimetype, f"{report_type.lower()}_report_{datetime.now().strftime('%Y%m%d')}{extension}"

    # ------------------------------------------------------------------
    # Report data
    # ------------------------------------------------------------------

    @staticmethod
    def get_report_data(params: dict) -> Dict[str, Any]:
        builders = {
            'LEDGER': ReportingService.ledger_report,
            'PROFIT_AND_LOSS': ReportingService.profit_and_loss,
            'CLIENT_BALANCES': ReportingService.client_balances_report,
            'SESSIONS': ReportingService.sessions_report,
        }
        return builders[params['report_type']](params.get('start_date'), params.get('end_date'))

    @staticmethod
    def ledger_report(start_date=None, end_date=None) -> Dict[str, Any]:
        entries = LedgerService.list_entries(start_date=start_date, end_date=end_date)
        clients = {c.id: c.full_name for c in Client.query.all()}
        items = [{
            'date': e.payment_date.isoformat(),
            'client': clients.get(e.client_id, ''),
            'type': 'charge' if e.is_charge else 'payment',
            'amount': str(to_money(e.amount)),
            'method': e.payment_method,
            'status': e.status,
            'description': e.description or ''
        } for e in entries]

        charges = sum((-to_money(e.amount) for e in entries if e.is_charge), Decimal('0.00'))
        payments = sum((to_money(e.amount) for e in entries if not e.is_charge and e.status == 'completed'),
                       Decimal('0.00'))
        return {
            'title': 'Client Ledger',
            'items': items,
            'summary': {
                'entries': len(items),
                'total_charges': str(charges),
                'total_payments': str(payments),
                'currency': current_app.config.get('CURRENCY', 'AED')
            }
        }

    @staticmethod
    def profit_and_loss(start_date=None, end_date=None) -> Dict[str, Any]:
        """Revenue (completed payments) against expenses by category."""
        payments = Payment.query.filter(Payment.amount > 0, Payment.status == 'completed')
        if start_date:
            payments = payments.filter(Payment.payment_date >= start_date)
        if end_date:
            payments = payments.filter(Payment.payment_date <= end_date)

        revenue_by_method = {}
        for payment in payments.all():
            revenue_by_method.setdefault(payment.payment_method, Decimal('0.00'))
            revenue_by_method[payment.payment_method] += to_money(payment.amount)
        revenue = sum(revenue_by_method.values(), Decimal('0.00'))

        expenses_by_category = ExpenseService.totals_by_category(start_date, end_date)
        expenses = sum(expenses_by_category.values(), Decimal('0.00'))

        items = [{'section': 'Revenue', 'line': method, 'amount': str(amount)}
                 for method, amount in sorted(revenue_by_method.items())]
        items += [{'section': 'Expenses', 'line': category, 'amount': str(amount)}
                  for category, amount in expenses_by_category.items()]

        return {
            'title': 'Profit & Loss',
            'items': items,
            'summary': {
                'period_start': start_date.isoformat() if start_date else 'all time',
                'period_end': end_date.isoformat() if end_date else 'today',
                'total_revenue': str(revenue),
                'total_expenses': str(expenses),
                'net_profit': str(revenue - expenses),
                'currency': current_app.config.get('CURRENCY', 'AED')
            }
        }

    @staticmethod
    def client_balances_report(start_date=None, end_date=None) -> Dict[str, Any]:
        clients = {c.id: c for c in Client.query.all()}
        balances = LedgerService.get_client_balances()
        items = [{
            'client': clients[b.client_id].full_name,
            'email': clients[b.client_id].email,
            'total_charges': str(b.total_charges),
            'total_payments': str(b.total_payments),
            'balance': str(b.balance),
            'outstanding': str(b.outstanding)
        } for b in balances]
        return {
            'title': 'Client Balances',
            'items': items,
            'summary': {
                'clients': len(items),
                'total_outstanding': str(sum((b.outstanding for b in balances), Decimal('0.00')))
            }
        }

    @staticmethod
    def sessions_report(start_date=None, end_date=None) -> Dict[str, Any]:
        sessions = SessionService.list_sessions(start_date=start_date, end_date=end_date)
        items = [{
            'date': s.date.isoformat(),
            'start': s.start_time.strftime('%H:%M'),
            'client': s.client.full_name,
            'trainer': s.trainer.profile.full_name if s.trainer and s.trainer.profile else '',
            'type': s.session_type,
            'status': s.status,
            'paid_by': 'package' if s.client_package_id else ('direct' if s.price else '')
        } for s in sessions]
        counts = {}
        for s in sessions:
            counts[s.status] = counts.get(s.status, 0) + 1
        return {
            'title': 'Sessions',
            'items': items,
            'summary': dict(sessions=len(items), **counts)
        }


class DashboardService:
    """Figures for the staff dashboard, scoped to what the actor may see."""

    @staticmethod
    def get_stats(actor=None, today=None) -> Dict[str, Any]:
        from .client_service import ClientService
        from ..models.user import Permission

        stats = {
            'clients': ClientService.get_stats(actor),
            'sessions': SessionService.get_session_stats(today=today, actor=actor),
            'upcoming_sessions': [
                s.to_dict() for s in SessionService.get_upcoming_sessions(today=today, actor=actor)
            ],
            'recent_sessions': [
                s.to_dict() for s in DashboardService.get_recent_sessions(actor=actor)
            ]
        }
        if actor is None or actor.has_permission(Permission.CLIENTS_SHOW_FINANCIAL_INFO):
            stats['financial'] = LedgerService.get_financial_stats()
        return stats

    @staticmethod
    def get_recent_sessions(actor=None, limit=5):
        return SessionService._scoped_query(actor) \
            .filter(TrainingSession.status != 'scheduled') \
            .order_by(TrainingSession.date.desc(), TrainingSession.start_time.desc()) \
            .limit(limit) \
            .all()
