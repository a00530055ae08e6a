from txproxy.bootstrap.config.loader import get_cli_args
from txproxy.bootstrap.deps import get_config, get_cp
from txproxy.core.helpers.utils import setup_signal_handler, setup_logging, scan


@scan("txproxy.bootstrap.handlers")
def main():
    cli = get_cli_args()
    setup_logging(cli.log_level, verbose=get_config().verbose)

    controlplane = get_cp()
    loop = controlplane.loop

    try:
        with setup_signal_handler() as stop_event:
            loop.run_until_complete(controlplane.start(stop_event))
    except KeyboardInterrupt:
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.run_until_complete(loop.shutdown_default_executor())
        finally:
            loop.close()
