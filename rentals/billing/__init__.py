"""
Module 'billing': balayage périodique des soldes différés (facture du solde la veille de la livraison).
"""
