"""
Contactsaver core: clean-architecture layout.

- domain: numbers, names, entities and errors. No outer dependencies.
- application: ledger, directory aggregator, decision engine, capture dialog,
  bulk runner, and the ports they need.
- infrastructure: adapters (document stores, Google People, Telegram, settings).
"""
