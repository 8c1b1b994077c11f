"""Per-publisher ingestion routines.

Each ``fetch_*_data`` coroutine returns a :class:`DatasetResult` and never
raises: live failures are replaced by the module's reference values, tagged
``fallback`` field by field.

- bde: public debt (national and by region)
- aeat: tax revenue (national and by tax office)
- igae: COFOG expenditure by function
- ine: population, employment, GDP, salaries, CPI
- seguridad_social: contributory pensions
- hacienda: regional financing settlements
- eurostat: EU comparison indicators and the revenue series
"""

from cuentas_publicas.sources.aeat import fetch_tax_revenue_data
from cuentas_publicas.sources.bde import fetch_ccaa_debt_data, fetch_debt_data
from cuentas_publicas.sources.eurostat import fetch_eurostat_data, fetch_revenue_data
from cuentas_publicas.sources.hacienda import fetch_ccaa_fiscal_balance_data
from cuentas_publicas.sources.igae import fetch_budget_data
from cuentas_publicas.sources.ine import fetch_demographics_data
from cuentas_publicas.sources.seguridad_social import fetch_pensions_data

__all__ = [
    "fetch_budget_data",
    "fetch_ccaa_debt_data",
    "fetch_ccaa_fiscal_balance_data",
    "fetch_debt_data",
    "fetch_demographics_data",
    "fetch_eurostat_data",
    "fetch_pensions_data",
    "fetch_revenue_data",
    "fetch_tax_revenue_data",
]
