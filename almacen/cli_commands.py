"""
Flask CLI commands for warehouse maintenance.

Commands:
- flask init-db: Create all tables
- flask import-products: Import products from the inventory workbook
- flask send-stock-alerts: Email the stock alert digest
"""

import click

from almacen import database
from almacen.exceptions import AlmacenError
from almacen.middleware import Actor


CLI_ACTOR = Actor('cli', 'Línea de comandos')


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create the database tables."""
        database.create_tables()
        click.echo(click.style('✅ Tablas creadas', fg='green'))

    @app.cli.command('import-products')
    @click.option('--url', default=None, help='Download the workbook from this URL')
    @click.option('--object', 'object_name', default=None, help='Storage object name (default EXCEL_OBJECT_NAME)')
    def import_products_command(url, object_name):
        """Import products from the inventory Excel workbook."""
        from almacen.services import import_service

        try:
            rows = import_service.load_products_from_excel(url=url, object_name=object_name)
            result = import_service.import_products(database.get_session(), rows, actor=CLI_ACTOR)
        except AlmacenError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style(
            f"\n✅ Importación finalizada: {result['imported']} importados, "
            f"{result['skipped']} omitidos, {result['errors']} errores",
            fg='green', bold=True
        ))
        for detail in result['details']:
            if detail['status'] == 'error':
                click.echo(f"   ✗ {detail['code']}: {detail['message']}")

    @app.cli.command('send-stock-alerts')
    @click.option('--to', default=None, help='Recipient(s), comma separated (default ALERT_EMAIL_TO)')
    def send_stock_alerts_command(to):
        """Email the low / almost-out / excess stock digest."""
        from almacen.services import alert_service

        try:
            result = alert_service.send_stock_alerts(database.get_session(), to=to, actor=CLI_ACTOR)
        except AlmacenError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            raise SystemExit(1)

        counts = result['counts']
        summary = (
            f"bajo: {counts['low_stock']}, por agotarse: {counts['almost_out']}, "
            f"exceso: {counts['excess_stock']}"
        )
        if result['sent']:
            click.echo(click.style(f"✅ Alertas enviadas a {', '.join(result['recipients'])} ({summary})", fg='green'))
        else:
            click.echo(f"ℹ️  No se envió el correo ({summary})")
