"""
Salesforce 字段类型到暂存表列类型的映射
"""

ID_COLUMN_TYPE = "varchar(20)"

TYPE_MAPPING = {
    'id': ID_COLUMN_TYPE,
    'reference': ID_COLUMN_TYPE,
    'string': 'text',
    'textarea': 'text',
    'picklist': 'text',
    'multipicklist': 'text',
    'combobox': 'text',
    'phone': 'text',
    'url': 'text',
    'boolean': 'boolean',
    'int': 'integer',
    'double': 'double precision',
    'currency': 'double precision',
    'percent': 'double precision',
    'date': 'date',
    # timestamp 列在 MariaDB 中有 2038 上限且 NULL 会写成当前时间
    'datetime': 'datetime(3)',
    'email': 'varchar(255)',
}


def map_type(declared_type: str) -> str:
    """未知类型原样返回，新增的远端类型不会阻塞表结构同步"""
    return TYPE_MAPPING.get(declared_type, declared_type)
