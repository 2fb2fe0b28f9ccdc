"""Command-line interface for dynamic gRPC calls."""

import json
import sys

import click
from rich.console import Console
from rich.table import Table

from dynrpc.constants import DEFAULT_TIMEOUT
from dynrpc.errors import RpcEngineError
from dynrpc.export import default_export_filename, export_response
from dynrpc.grpcunaryclient import UnaryResponse
from dynrpc.main import main as Facade
from dynrpc.metadata import GrpcMetadata, GrpcMetadataError
from dynrpc.MockDataGenerator import MockDataGenerator


def _fail(data) -> None:
    if not isinstance(data, str):
        data = json.dumps(data, indent=2)
    click.echo(data, err=True)
    sys.exit(1)


def _load(facade: Facade, proto: str, import_paths) -> dict:
    response = facade.get_services(proto, list(import_paths) or None)
    if response['error']:
        _fail(response['data'])
    return response['data']


@click.group()
def cli() -> None:
    """Call gRPC services described by .proto files without generated code."""


@cli.command()
@click.argument("proto", type=click.Path(exists=True, dir_okay=False))
@click.option("--import-path", "-I", "import_paths", multiple=True, help="Additional proto include directory")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def services(proto: str, import_paths, output_json: bool) -> None:
    """List services and methods declared by PROTO and its imports."""
    summary = _load(Facade(host=None), proto, import_paths)

    if output_json:
        click.echo(json.dumps(summary, indent=2))
        return

    table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    table.add_column("Service", style="cyan")
    table.add_column("Methods", style="white")
    for full_name, service in summary.items():
        table.add_row(full_name, ", ".join(service['methods']))
    Console().print(table)


@cli.command()
@click.argument("proto", type=click.Path(exists=True, dir_okay=False))
@click.argument("type_name")
@click.option("--import-path", "-I", "import_paths", multiple=True, help="Additional proto include directory")
def template(proto: str, type_name: str, import_paths) -> None:
    """Print a request skeleton for message TYPE_NAME."""
    facade = Facade(host=None)
    _load(facade, proto, import_paths)
    try:
        click.echo(MockDataGenerator(facade.index).generate(type_name))
    except RpcEngineError as e:
        _fail(facade.exception_to_serializable(e))


@cli.command()
@click.argument("proto", type=click.Path(exists=True, dir_okay=False))
@click.argument("service")
@click.argument("method")
@click.argument("target")
@click.option("--import-path", "-I", "import_paths", multiple=True, help="Additional proto include directory")
@click.option("--data", "-d", default="{}", help="Request body as JSON, or @file to read it from a file")
@click.option("--metadata", "-m", "metadata_json", default=None, help="Metadata as a JSON object of strings")
@click.option("--timeout", "-t", type=float, default=DEFAULT_TIMEOUT, help="Deadline in seconds")
@click.option("--export", "export_path", is_flag=False, flag_value="", default=None,
              help="Write the response to a file. No value=response_<timestamp>.json")
@click.option("--with-metadata", is_flag=True, default=False, help="Include timing and status in the exported file")
def call(proto: str, service: str, method: str, target: str, import_paths, data: str, metadata_json,
         timeout, export_path, with_metadata: bool) -> None:
    """Invoke unary METHOD of SERVICE on TARGET."""
    if data.startswith("@"):
        with open(data[1:], encoding="utf-8") as f:
            data = f.read()

    try:
        metadata = GrpcMetadata.from_json(metadata_json) if metadata_json else GrpcMetadata()
    except GrpcMetadataError as e:
        _fail(str(e))

    facade = Facade(host=target)
    _load(facade, proto, import_paths)
    response = facade.execute_request(service, method, data, meta_data=list(metadata.headers.items()), timeout=timeout)
    if response['error']:
        _fail(response['data'])

    result = response['data']
    click.echo(result['response'])
    click.echo(f"{result['statusMessage']} in {result['responseTime'] * 1000:.1f} ms", err=True)

    if export_path is not None:
        unary_response = UnaryResponse(
            response_json=result['response'],
            elapsed_seconds=result['responseTime'],
            status_code=result['statusCode'],
            status_message=result['statusMessage'],
        )
        destination = export_response(unary_response, export_path or default_export_filename(), with_metadata)
        click.echo(f"Exported to {destination}", err=True)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
