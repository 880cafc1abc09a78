from pawx.pawx_cli import cli

cli()
