# ==============================================================================
# fleetpay/reconciliation/schema.py
# ------------------------------------------------------------------------------
# Defines the expected structure of each platform's export rows.
# This schema is the single source of truth for the extractors and the validator.
# Header names drift between export versions, so each field lists its aliases in
# order of preference.
# ==============================================================================

UBER = 'uber'
BOLT = 'bolt'
MYPRIO = 'myprio'
VIAVERDE = 'viaverde'
CARTRACK = 'cartrack'

RIDE_HAILING_PLATFORMS = (UBER, BOLT)
EXPENSE_PLATFORMS = (MYPRIO, VIAVERDE)

PLATFORM_SCHEMAS = {
    UBER: {
        'label': 'Uber',
        'financial': True,
        'time_bounded': False,
        'fields': {
            'key': ['UUID do motorista', 'UUID', 'Driver UUID', 'driver_uuid', 'UUID Motorista'],
            'name': ['Nome do motorista', 'Driver name', 'Motorista'],
            'amount': ['Pago a si', 'Pago a si (€)', 'Paid to you', 'Net amount', 'Net earnings'],
            'trips': ['Viagens', 'Trips', 'Viagens (total)'],
            'reimbursed': ['Portagens', 'Tolls', 'Reembolsos', 'Refunds'],
        },
        'required': ['key', 'amount'],
    },
    BOLT: {
        'label': 'Bolt',
        'financial': True,
        'time_bounded': False,
        'fields': {
            'key': ['Email', 'Driver email', 'Email do motorista', 'Bolt ID', 'Driver ID'],
            'name': ['Motorista', 'Driver', 'Nome do motorista'],
            'amount': ['Ganhos brutos (total)|€', 'Ganhos brutos (total)', 'Total Earnings', 'Ganhos brutos (€)'],
            'trips': ['Viagens (total)', 'Viagens', 'Trips'],
            'reimbursed': ['Portagens|€', 'Portagens', 'Tolls'],
        },
        'required': ['key', 'amount'],
    },
    MYPRIO: {
        'label': 'PRIO',
        'financial': True,
        'time_bounded': True,
        'fields': {
            'key': ['CARTAO', 'CARTÃO', 'Cartão', 'Card', 'CARD'],
            'plate': ['DESC CARTAO', 'Matrícula', 'MATRICULA', 'Matricula', 'License plate',
                      'Licence plate', 'Placa', 'PLACA'],
            'amount': ['TOTAL', 'Total', 'Valor', 'Valor Total', 'TOTAL (EUR)'],
            'timestamp': ['DATA', 'Data', 'Date', 'Data Transação', 'Transaction date'],
        },
        # Fuel exports without a date column are trusted to cover the week.
        'required': ['amount'],
    },
    VIAVERDE: {
        'label': 'ViaVerde',
        'financial': True,
        'time_bounded': True,
        'fields': {
            'key': ['Matrícula', 'MATRICULA', 'Matricula', 'Matricula ', 'License Plate',
                    'Licence Plate', 'PLACA', 'Placa'],
            'tag': ['OBU', 'Tag', 'Transponder'],
            'amount': ['Value', 'Valor', 'TOTAL', 'Total'],
            'timestamp': ['Entry Date', 'Data Entrada', 'Data', 'Date', 'Exit Date', 'Data Saída'],
        },
        'required': ['amount', 'timestamp'],
    },
    CARTRACK: {
        'label': 'Cartrack',
        'financial': False,
        'time_bounded': True,
        'fields': {
            'key': ['Registration', 'Matrícula', 'Matricula', 'Plate', 'Vehicle'],
            'trips': ['Trips', 'Viagens'],
            'distance': ['Distance (km)', 'Distância (km)', 'Distance', 'km'],
            'timestamp': ['Date', 'Data', 'Start Time'],
        },
        'required': [],
    },
}

SUPPORTED_PLATFORMS = tuple(PLATFORM_SCHEMAS)


def platform_label(platform):
    if not isinstance(platform, str):
        return str(platform)
    return PLATFORM_SCHEMAS.get(platform, {}).get('label', str(platform).upper())


def find_missing_columns(platform, headers):
    """Names of the platform's required fields for which none of the aliases is among the headers."""
    present = {str(h).strip().lower() for h in headers}
    schema = PLATFORM_SCHEMAS[platform]
    return [name for name in schema['required']
            if not any(alias.strip().lower() in present for alias in schema['fields'][name])]
