"""Pure data models shared by the protocol engine, CLI and tests."""
