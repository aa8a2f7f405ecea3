"""Entry point for ``python -m fleetsync`` and the ``fleetsync`` script."""

from fleetsync import Bridge, __version__


def main() -> None:
    Bridge(name="fleetsync", version=__version__).cli()


if __name__ == "__main__":
    main()
