"""Insurer-facing dashboard, access gate and PDF report."""

from .access import AccessGate
from .dashboard import InsurerDashboard
from .report import render_claim_report

__all__ = ['AccessGate', 'InsurerDashboard', 'render_claim_report']
