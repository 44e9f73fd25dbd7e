"""
Sub-commands of the fedicache CLI. Each module here is one sub-command, named like the module
with underscores replaced by dashes.
"""
