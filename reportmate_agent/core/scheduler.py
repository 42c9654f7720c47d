"""
Module de planification pour l'agent ReportMate

Ce module gère :
- La planification des cycles de collecte périodiques
- L'exécution des cycles en arrière-plan
- Le démarrage et l'arrêt du scheduler
"""

import threading
from datetime import datetime
from typing import Callable
import schedule


class CollectionScheduler:
    """
    Gestionnaire de planification des cycles de collecte

    Utilise le module 'schedule' pour déclencher un cycle toutes les
    `collection_interval` secondes. Chaque cycle repart de zéro.
    """

    def __init__(self, config, logger, cycle_callback: Callable[[], None]):
        """
        Initialise le scheduler

        Args:
            config: Instance de AgentConfig
            logger: Instance de AgentLogger
            cycle_callback: Fonction à appeler pour exécuter un cycle complet
        """
        self.config = config
        self.logger = logger.get_logger()
        self.cycle_callback = cycle_callback

        # Instance dédiée : ne partage pas les tâches du scheduler global
        self.scheduler = schedule.Scheduler()

        self.is_running = False
        self.scheduler_thread = None
        self.stop_event = threading.Event()
        self.cycle_lock = threading.Lock()

        self.interval = None
        self.next_run = None
        self.last_run = None

        self._setup_schedule()

    def _setup_schedule(self):
        """Configure la planification à partir de collection_interval"""
        interval = self.config.getint('agent', 'collection_interval', 3600)
        if interval <= 0:
            self.logger.warning(f"Intervalle invalide '{interval}', utilisation de 3600s")
            interval = 3600

        self.interval = interval
        self.scheduler.clear()
        self.scheduler.every(interval).seconds.do(self._scheduled_cycle)
        self.logger.info(f"Planification configurée: toutes les {interval} secondes")

        self._update_next_run()

    def _scheduled_cycle(self):
        """
        Méthode appelée par le scheduler pour déclencher un cycle

        Un cycle encore en cours n'est jamais doublé.
        """
        if not self.cycle_lock.acquire(blocking=False):
            self.logger.warning("Cycle précédent encore en cours, déclenchement ignoré")
            return

        self.logger.info("=== Cycle de collecte planifié déclenché ===")
        try:
            self.cycle_callback()
            self.last_run = datetime.now()
            self.logger.info("Cycle de collecte planifié terminé")

        except Exception:
            self.logger.exception("Erreur lors du cycle planifié")

        finally:
            self.cycle_lock.release()
            self._update_next_run()

    def _update_next_run(self):
        """Met à jour le timestamp de la prochaine exécution"""
        self.next_run = self.scheduler.next_run
        if self.next_run:
            self.logger.debug(f"Prochain cycle planifié: {self.next_run}")

    def start(self, run_immediately: bool = True):
        """
        Démarre le scheduler en arrière-plan

        Args:
            run_immediately: Exécuter un premier cycle dès le démarrage
        """
        if self.is_running:
            self.logger.warning("Scheduler déjà en cours d'exécution")
            return

        self.logger.info("Démarrage du scheduler...")

        self.is_running = True
        self.stop_event.clear()

        self.scheduler_thread = threading.Thread(
            target=self._scheduler_loop,
            args=(run_immediately,),
            name="CollectionScheduler",
            daemon=True
        )
        self.scheduler_thread.start()

        self.logger.info(f"Scheduler démarré (intervalle: {self.interval}s)")

    def stop(self):
        """Arrête le scheduler et attend la fin du thread"""
        if not self.is_running:
            self.logger.warning("Scheduler pas en cours d'exécution")
            return

        self.logger.info("Arrêt du scheduler...")

        self.is_running = False
        self.stop_event.set()

        if self.scheduler_thread and self.scheduler_thread.is_alive():
            self.scheduler_thread.join(timeout=5)

        self.logger.info("Scheduler arrêté")

    def _scheduler_loop(self, run_immediately: bool):
        """Boucle principale du scheduler"""
        self.logger.debug("Boucle du scheduler démarrée")

        if run_immediately:
            self._scheduled_cycle()

        while not self.stop_event.is_set():
            try:
                self.scheduler.run_pending()
            except Exception:
                self.logger.exception("Erreur dans la boucle du scheduler")

            # Réveil fréquent pour réagir rapidement à l'arrêt
            self.stop_event.wait(timeout=min(30, self.interval))

        self.logger.debug("Boucle du scheduler terminée")

    def get_status(self) -> dict:
        """
        Retourne le statut actuel du scheduler

        Returns:
            dict: Informations sur l'état du scheduler
        """
        return {
            'is_running': self.is_running,
            'interval_seconds': self.interval,
            'last_run': self.last_run.isoformat() if self.last_run else None,
            'next_run': self.next_run.isoformat() if self.next_run else None,
            'scheduled_jobs_count': len(self.scheduler.get_jobs())
        }
