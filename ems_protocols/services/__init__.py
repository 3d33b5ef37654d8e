"""Language model relay, quiz generation and dosing calculator services."""
