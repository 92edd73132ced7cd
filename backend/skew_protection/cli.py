"""Command line entry point: run the build hook or serve the app"""

import argparse
import asyncio
import logging
import sys
import uvicorn
from skew_protection.core.build import BuildPipeline
from skew_protection.core.config import get_settings
from skew_protection.core.storage import create_storage
from skew_protection.main import configure_logging
from skew_protection.models.errors import DeploymentIdCollisionError

logger = logging.getLogger(__name__)


async def run_build(settings, deployment_id: str, output_dir: str, version_id=None):
    storage = create_storage(settings)
    try:
        return await BuildPipeline(settings, storage).run(deployment_id, output_dir, version_id=version_id)
    finally:
        await storage.close()


def main(argv=None):
    parser = argparse.ArgumentParser(prog="skew-protection", description="Version skew protection")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Register a finished build and sweep old versions")
    build.add_argument('--deployment-id', required=True, help="Unique id of this deployment")
    build.add_argument('--output-dir', required=True, help="Build output directory (contains public/)")
    build.add_argument('--version-id', help="Version id (defaults to the deployment id)")

    serve = subparsers.add_parser("serve", help="Run the skew protection server")
    serve.add_argument('--host', help="Bind address")
    serve.add_argument('--port', type=int, help="Bind port")

    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    if args.command == "build":
        try:
            result = asyncio.run(run_build(settings, args.deployment_id, args.output_dir, args.version_id))
        except DeploymentIdCollisionError as e:
            logger.error(f"{e.message} {e.hint}")
            sys.exit(1)
        print(f"OK Version {result.version_id} registered ({len(result.assets)} assets, "
              f"{len(result.evicted)} evicted, {result.restored} restored)")
        if result.failed_assets:
            print(f"WARN: {len(result.failed_assets)} assets could not be stored", file=sys.stderr)
        return

    uvicorn.run(
        "skew_protection.main:create_app",
        factory=True,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
