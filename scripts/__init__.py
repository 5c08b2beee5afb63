"""
Operational scripts.

- setup_supabase.py: Print the Antistatic schema SQL (or the drop SQL) and
  verify that every required table exists in the configured project

Run with: python -m scripts.setup_supabase --type setup
"""
