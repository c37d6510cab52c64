"""
Services de l'application
Logique métier des devis, factures et documents PDF
"""
