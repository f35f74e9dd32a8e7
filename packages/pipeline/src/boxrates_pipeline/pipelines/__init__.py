"""
boxrates_pipeline.pipelines — Orchestrators over the source, store and writer.

    from boxrates_pipeline.pipelines.reconcile import TariffReconciler
    from boxrates_pipeline.pipelines.publish import PublishCoordinator
    from boxrates_pipeline.pipelines.cycle import TariffSyncCycle

    result = await TariffSyncCycle(reconciler, coordinator).run("2025-11-12")
"""
