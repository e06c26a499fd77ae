from jinja2 import Environment


def _signed(value: int) -> str:
    return f"{value:+d}" if value else "0"


_env = Environment(keep_trailing_newline=True)
_env.filters["signed"] = _signed

AUDIT_REPORT_TEMPLATE = _env.from_string(
    """RAPPORT D'INVENTAIRE
Date: {{ created_at.strftime('%d/%m/%Y %H:%M') }}
Auditeur: {{ auditor or 'Inconnu' }}
Total références: {{ audit.total_items }}
Écarts constatés: {{ audit.discrepancy_count }}

{{ '%-32s' | format('Médicament') }} {{ '%9s' | format('Système') }} {{ '%9s' | format('Physique') }} {{ '%7s' | format('Écart') }}   Commentaire
{% for item in items -%}
{{ '%-32s' | format(item.med_name[:32]) }} {{ '%9d' | format(item.theoretical_stock) }} {{ '%9d' | format(item.physical_stock) }} {{ '%7s' | format(item.gap | signed) }}{% if item.gap != 0 %} ! {% else %}   {% endif %}{{ item.comment or '' }}
{% endfor -%}
{% if narcotics %}
STUPÉFIANTS: AMPOULES VIDES
{% for item in narcotics -%}
{{ '%-32s' | format(item.med_name[:32]) }} attendues: {{ item.expected_empty_vials if item.expected_empty_vials is not none else '-' }} comptées: {{ item.physical_empty_vials if item.physical_empty_vials is not none else 'non saisi' }}
{% endfor -%}
{% endif %}"""
)


def render_audit_report(audit, auditor: str | None = None) -> str:
    items = list(audit.items)
    return AUDIT_REPORT_TEMPLATE.render(
        audit=audit,
        created_at=audit.created_at,
        auditor=auditor,
        items=items,
        narcotics=[item for item in items if item.is_narcotic],
    )
