"""
Module 'notifications': envoi best-effort (email Resend, SMS Twilio).
Un échec d'envoi est journalisé, jamais propagé au flux de paiement.
"""
