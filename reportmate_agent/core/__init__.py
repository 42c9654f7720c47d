"""
Module Core - Composants principaux de l'agent ReportMate

Ce module contient les fonctionnalités de base de l'agent :
- Exécution des backends et moteur de fallback
- Exécution concurrente des sous-collecteurs
- Configuration et logging
- Planification et envoi à l'API
"""
