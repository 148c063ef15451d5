from datetime import date

import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_short_token(length: int = 12) -> str:
    return shortuuid.ShortUUID().random(length=length)


def reconciliation_code(target_date: date) -> str:
    # e.g. REC-20250916-7K2Q
    suffix = shortuuid.ShortUUID(alphabet="23456789ABCDEFGHJKLMNPQRSTUVWXYZ").random(length=4)
    return f"REC-{target_date:%Y%m%d}-{suffix}"


def invoice_number(sale_date: date) -> str:
    return f"INV-{sale_date:%Y%m%d}-{generate_short_token(8).upper()}"
