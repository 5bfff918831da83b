"""
CLI entry point, when used as a module: `python -m declsync`.

Useful for debugging in the IDEs (use the start-mode "Module", module "declsync").
"""
from declsync import cli

if __name__ == '__main__':
    cli.main()
