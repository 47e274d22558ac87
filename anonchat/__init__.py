"""Anonymous group chat with sending/sent/delivered receipts."""
