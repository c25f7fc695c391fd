"""Webhook ingestion: GoTo Connect, VAPI, generic calls/forms and Graph."""
