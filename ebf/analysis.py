"""
AI narrative summaries of the dashboard figures and of technician reports.

Both helpers never raise: a missing client, a failing call or a timeout
yields a fixed message the dashboard can show as is.
"""

import asyncio
import json
import logging
from typing import Optional, Sequence

from langchain_core.messages import HumanMessage, SystemMessage

from ebf.config import LLM_TIMEOUT_SECONDS
from ebf.models import DailyReport, DailyStat

logger = logging.getLogger(__name__)

NO_CLIENT_BUSINESS = "Clé API manquante ou invalide. Configurez OPENAI_API_KEY."
EMPTY_BUSINESS = "Analyse indisponible."
FAILED_BUSINESS = "Erreur lors de l'analyse des données (Vérifiez les quotas API)."

NO_CLIENT_REPORTS = "Clé API manquante."
EMPTY_REPORTS = "Synthèse indisponible."
FAILED_REPORTS = "Erreur lors de l'analyse des rapports."


def _payload(records: Sequence) -> str:
    return json.dumps([r.to_row() for r in records], ensure_ascii=False, default=str)


async def _ask(llm, messages, timeout: float) -> str:
    resp = await asyncio.wait_for(asyncio.to_thread(llm.invoke, messages), timeout=timeout)
    content = getattr(resp, "content", "") or ""
    return content.strip() if isinstance(content, str) else str(content).strip()


# ── Business analysis ────────────────────────────────────────────────

async def analyze_business_data(llm, stats: Sequence[DailyStat], site: str,
                                timeout: float = LLM_TIMEOUT_SECONDS) -> str:
    """Short financial-health summary (max 50 words) of the given stats."""
    if llm is None:
        return NO_CLIENT_BUSINESS

    system = SystemMessage(
        content=(
            "Tu es un expert en business intelligence pour l'entreprise EBF.\n"
            "Donne un résumé court, percutant et professionnel (max 50 mots) "
            "sur la santé financière et l'activité.\n"
            "Utilise un ton encourageant ou d'avertissement selon les chiffres."
        )
    )
    human = HumanMessage(content=f"Site : {site}\n\nDonnées : {_payload(stats)}")
    try:
        return await _ask(llm, [system, human], timeout) or EMPTY_BUSINESS
    except asyncio.TimeoutError:
        logger.warning("Business analysis timed out after %.0fs", timeout)
        return FAILED_BUSINESS
    except Exception:
        logger.exception("Business analysis failed")
        return FAILED_BUSINESS


# ── Report synthesis ─────────────────────────────────────────────────

async def analyze_reports(llm, reports: Sequence[DailyReport], period: Optional[str],
                          timeout: float = LLM_TIMEOUT_SECONDS) -> str:
    """Three-point supervisor synthesis of technician reports."""
    if llm is None:
        return NO_CLIENT_REPORTS

    system = SystemMessage(
        content=(
            "Tu es le superviseur technique de EBF.\n"
            "Fais une synthèse structurée en 3 points :\n"
            "1. Travaux accomplis majeurs.\n"
            "2. Problèmes ou blocages signalés (Urgent).\n"
            "3. Besoins en matériel."
        )
    )
    human = HumanMessage(
        content=f"Période : {getattr(period, 'value', period) or 'Toutes'}\n\nRapports : {_payload(reports)}"
    )
    try:
        return await _ask(llm, [system, human], timeout) or EMPTY_REPORTS
    except asyncio.TimeoutError:
        logger.warning("Report synthesis timed out after %.0fs", timeout)
        return FAILED_REPORTS
    except Exception:
        logger.exception("Report synthesis failed")
        return FAILED_REPORTS
