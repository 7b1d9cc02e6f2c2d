"""Order lifecycle: state machine, side effects and administration service."""
