"""
Excel import of catalog products.

The workbook is fetched from object storage (EXCEL_OBJECT_NAME) or from an
explicit URL, read with pandas/openpyxl, and imported row by row. Every
row is created inside its own SAVEPOINT so one bad row never aborts the
rest of the batch.

Workbook layout: first sheet, first row holds the headers.
    - code column:        header containing 'código' / 'codigo'
    - description column: header containing 'producto' / 'descripción' / 'descripcion'
    - optional:           'unidad', 'departamento'
"""
import logging
import math
from io import BytesIO
from typing import Iterable, List, Optional
from urllib.parse import urlparse

import pandas as pd
import requests
from flask import current_app

from almacen.blueprints.metrics import stock_import_rows_total
from almacen.exceptions import AlmacenError, ImportFormatError, StoreUnavailableError, ValidationError
from almacen.middleware import ANONYMOUS
from almacen.models import AuditAction
from almacen.services.audit_service import log_action
from almacen.services.cache_service import invalidate_stock_caches
from almacen.services.product_service import create_product, exists_by_code, normalize_code
from almacen.services.storage_service import get_storage_service

logger = logging.getLogger(__name__)

CODE_HEADERS = ('código', 'codigo')
DESCRIPTION_HEADERS = ('producto', 'descripción', 'descripcion')
UNIT_HEADERS = ('unidad',)
DEPARTMENT_HEADERS = ('departamento',)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def _cell_text(value) -> str:
    """Cell to trimmed text; empty cells (None / NaN) become ''."""
    if value is None:
        return ''
    if isinstance(value, float):
        if math.isnan(value):
            return ''
        if value.is_integer():
            # Numeric codes come back from Excel as 1001.0
            return str(int(value))
    return str(value).strip()


def _find_column(headers: List[str], keywords: Iterable[str], exclude: Iterable[int] = ()) -> Optional[int]:
    for index, header in enumerate(headers):
        if index in exclude:
            continue
        if any(keyword in header for keyword in keywords):
            return index
    return None


def parse_excel_rows(rows: List[list]) -> List[dict]:
    """
    Turn raw sheet rows (first row = headers) into product dicts.

    Rows without code or description are dropped.

    Raises:
        ImportFormatError: sheet empty or a required column missing
    """
    if not rows:
        raise ImportFormatError('El archivo Excel está vacío')

    headers = [_cell_text(h).lower() for h in rows[0]]

    code_index = _find_column(headers, CODE_HEADERS)
    if code_index is None:
        raise ImportFormatError('No se encontró la columna de código (Código)', payload={'headers': headers})

    description_index = _find_column(headers, DESCRIPTION_HEADERS, exclude=(code_index,))
    if description_index is None:
        raise ImportFormatError('No se encontró la columna de producto (Producto / Descripción)', payload={'headers': headers})

    used = (code_index, description_index)
    unit_index = _find_column(headers, UNIT_HEADERS, exclude=used)
    department_index = _find_column(headers, DEPARTMENT_HEADERS, exclude=used)

    def cell(row, index):
        if index is None or index >= len(row):
            return ''
        return _cell_text(row[index])

    products = []
    for row in rows[1:]:
        code = cell(row, code_index)
        description = cell(row, description_index)
        if not code or not description:
            continue
        products.append({
            'code': code,
            'description': description,
            'unit': cell(row, unit_index) or None,
            'department': (cell(row, department_index) or '').lower() or None,
        })

    return products


def read_workbook(data: bytes) -> List[dict]:
    """
    Parse workbook bytes into product dicts.

    Raises:
        ImportFormatError: not a readable Excel file, or wrong layout
    """
    try:
        df = pd.read_excel(BytesIO(data), sheet_name=0, header=None, dtype=object)
    except (ValueError, OSError, KeyError) as e:
        raise ImportFormatError(f'No se pudo leer el archivo Excel: {e}') from e

    rows = df.where(pd.notna(df), None).values.tolist()
    products = parse_excel_rows(rows)
    logger.info(f"[IMPORT] Workbook parsed: {len(rows)} sheet rows, {len(products)} products")
    return products


def _too_large(max_size: int) -> ValidationError:
    return ValidationError(f'El archivo es demasiado grande. Máximo {max_size / (1024 * 1024):.1f}MB')


def check_import_url(url: str) -> None:
    """
    Only http(s) URLs on a host listed in IMPORT_ALLOWED_HOSTS may be fetched.

    Raises:
        ValidationError: scheme or host not allowed
    """
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.hostname:
        raise ValidationError('La URL del archivo debe ser http o https')

    allowed = current_app.config.get('IMPORT_ALLOWED_HOSTS') or []
    if parsed.hostname.lower() not in allowed:
        logger.warning(f"[IMPORT] Rejected workbook URL host {parsed.hostname}")
        raise ValidationError(f'Host no permitido para importar: {parsed.hostname}')


def _download(url: str, max_size: int) -> bytes:
    """Stream the body, stopping as soon as it exceeds max_size."""
    timeout = current_app.config.get('EXCEL_DOWNLOAD_TIMEOUT', 30)
    try:
        logger.info(f"[IMPORT] Downloading workbook from {url}")
        response = requests.get(url, timeout=timeout, stream=True, allow_redirects=False)
    except requests.RequestException as e:
        logger.error(f"[IMPORT] Download failed: {e}")
        raise StoreUnavailableError(f'No se pudo descargar el archivo Excel: {e}') from e

    try:
        response.raise_for_status()
        if response.is_redirect:
            raise ValidationError('La URL del archivo redirige a otra ubicación')

        declared = response.headers.get('Content-Length')
        if declared and declared.isdigit() and int(declared) > max_size:
            raise _too_large(max_size)

        buffer = BytesIO()
        for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
            buffer.write(chunk)
            if buffer.tell() > max_size:
                raise _too_large(max_size)
        return buffer.getvalue()

    except requests.RequestException as e:
        logger.error(f"[IMPORT] Download failed: {e}")
        raise StoreUnavailableError(f'No se pudo descargar el archivo Excel: {e}') from e
    finally:
        response.close()


def fetch_workbook(url: Optional[str] = None, object_name: Optional[str] = None) -> bytes:
    """
    Download the workbook from a URL or from object storage.

    Raises:
        StoreUnavailableError: source unreachable
        ValidationError: URL not allowed or file too large
        NotFoundError: object missing in storage
    """
    max_size = current_app.config.get('MAX_IMPORT_SIZE', 10 * 1024 * 1024)

    if url:
        check_import_url(url)
        return _download(url, max_size)

    object_name = object_name or current_app.config.get('EXCEL_OBJECT_NAME', 'inventario/inventario.xlsx')
    return get_storage_service().download_file(object_name, max_size=max_size)



def load_products_from_excel(url: Optional[str] = None, object_name: Optional[str] = None) -> List[dict]:
    """Fetch and parse the inventory workbook."""
    return read_workbook(fetch_workbook(url=url, object_name=object_name))


def find_row_by_code(rows: List[dict], code) -> Optional[dict]:
    """Workbook row for a code, compared case-insensitively."""
    wanted = normalize_code(code).lower()
    if not wanted:
        return None
    for row in rows:
        if row['code'].lower() == wanted:
            return row
    return None


def preview_import(session, rows: List[dict]) -> List[dict]:
    """Rows annotated with `exists` (already in catalog) and `duplicate` (repeated in file)."""
    seen = set()
    preview = []
    for row in rows:
        preview.append({
            **row,
            'exists': exists_by_code(session, row['code']),
            'duplicate': row['code'] in seen,
        })
        seen.add(row['code'])
    return preview


def import_products(session, rows: List[dict], actor=ANONYMOUS, selected_codes: Optional[Iterable[str]] = None) -> dict:
    """
    Create catalog products from parsed workbook rows.

    Codes already in the catalog, and codes repeated within the file, are
    skipped. Each row runs in its own SAVEPOINT; a failing row is counted
    as an error and the rest continue.

    Args:
        session: SQLAlchemy session
        rows: output of parse_excel_rows / load_products_from_excel
        actor: Actor performing the import
        selected_codes: only import these codes (None = all rows)

    Returns:
        dict with keys imported, skipped, errors, details
    """
    selected = None
    if selected_codes is not None:
        selected = {normalize_code(c) for c in selected_codes if normalize_code(c)}

    default_department = current_app.config.get('IMPORT_DEFAULT_DEPARTMENT', 'otros')
    default_unit = current_app.config.get('DEFAULT_UNIT', 'pza')

    result = {'imported': 0, 'skipped': 0, 'errors': 0, 'details': []}
    seen = set()

    for row in rows:
        code = normalize_code(row.get('code'))
        if selected is not None and code not in selected:
            continue

        if code in seen:
            result['skipped'] += 1
            result['details'].append({'code': code, 'status': 'skipped', 'message': 'Código duplicado en el archivo'})
            stock_import_rows_total.labels(result='skipped').inc()
            continue
        seen.add(code)

        if exists_by_code(session, code):
            result['skipped'] += 1
            result['details'].append({'code': code, 'status': 'skipped', 'message': 'El código ya existe'})
            stock_import_rows_total.labels(result='skipped').inc()
            continue

        try:
            with session.begin_nested():
                product = create_product(session, {
                    'code': code,
                    'description': row.get('description'),
                    'unit': row.get('unit') or default_unit,
                    'department': row.get('department') or default_department,
                    'current_quantity': 0,
                    'imported_from_excel': True,
                }, actor=actor, commit=False)

            result['imported'] += 1
            result['details'].append({'code': code, 'status': 'imported', 'id': product.id})
            stock_import_rows_total.labels(result='imported').inc()

        except AlmacenError as e:
            result['errors'] += 1
            result['details'].append({'code': code, 'status': 'error', 'message': e.message})
            stock_import_rows_total.labels(result='error').inc()
            logger.warning(f"[IMPORT] Row {code} failed: {e.message}")

    try:
        log_action(session, actor, AuditAction.PRODUCTS_IMPORTED, 'product', None, {
            'imported': result['imported'],
            'skipped': result['skipped'],
            'errors': result['errors'],
        })
        session.commit()
    except Exception:
        session.rollback()
        raise

    if result['imported']:
        invalidate_stock_caches()

    logger.info(
        f"[IMPORT] Done by {actor.user_id}: imported={result['imported']} "
        f"skipped={result['skipped']} errors={result['errors']}"
    )
    return result
