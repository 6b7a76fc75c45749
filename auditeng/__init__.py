"""
AuditEng - AI-assisted compliance analysis for electrical test reports.

Example:
    >>> from auditeng.domains.analysis import AnalysisOrchestrator
    >>> orchestrator = AnalysisOrchestrator(repository, extractor, rag)
    >>> analysis_id = await orchestrator.create_and_process(request)
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
