"""Job engine: registries, init block cache, job store, work queue and worker loop.

Submission and polling never block on job execution. ``JobManager.submit``
persists a queued job and publishes an advisory work signal; worker loops
pop signals, claim the job with a conditional update (the only guard against
double execution), run the registered processor outside every engine lock,
and record the terminal outcome. Clients poll the store until the job is
done.
"""
