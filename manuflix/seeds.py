from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from manuflix.models import SubscriptionPlan

PLAN_SEED_DATA: list[dict[str, Any]] = [
    {
        "id": "monthly",
        "name": "Plano Mensal",
        "description": "Acesso completo por 30 dias",
        "price": Decimal("19.90"),
        "period": "mês",
        "features": ["Todos os cursos", "Novos conteúdos toda semana", "Assista em qualquer dispositivo"],
        "popular": False,
        "is_lifetime": False,
        "duration_days": 30,
    },
    {
        "id": "yearly",
        "name": "Plano Anual",
        "description": "Acesso completo por 12 meses",
        "price": Decimal("149.90"),
        "period": "ano",
        "features": ["Todos os cursos", "Novos conteúdos toda semana", "Certificados", "2 meses grátis"],
        "popular": True,
        "is_lifetime": False,
        "duration_days": 365,
    },
    {
        "id": "lifetime",
        "name": "Acesso Vitalício",
        "description": "Pagamento único, acesso para sempre",
        "price": Decimal("297.00"),
        "period": "único",
        "features": ["Todos os cursos", "Atualizações vitalícias", "Certificados", "Suporte prioritário"],
        "popular": False,
        "is_lifetime": True,
        "duration_days": 0,
    },
]


def seed_plans(db: Session) -> int:
    existing_ids = {row.id for row in db.query(SubscriptionPlan.id).all()}
    inserted = 0
    for item in PLAN_SEED_DATA:
        if item["id"] in existing_ids:
            continue
        db.add(SubscriptionPlan(**item))
        inserted += 1
    if inserted:
        db.commit()
    return inserted
