"""Process management — OS-level subprocess bookkeeping.

- ProcessRegistry: spawn, track, stop and drain output of shell subprocesses
- build_argv: turn an assembled command line into a launchable argv
"""
