"""Config-driven pipeline entrypoints."""


def run_pipeline(*args, **kwargs):
    from celltraj.pipeline.runner import run_pipeline as _run_pipeline

    return _run_pipeline(*args, **kwargs)


__all__ = ["run_pipeline"]
