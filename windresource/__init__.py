"""Wind Resource - Wind resource assessment on real terrain.

A computational core for siting wind turbines:
- Terrain exposure and surface roughness from topography and land cover rasters
- Site-calibrated flow model fitted across met masts, with Jensen wake losses
- Wind speed, exposure and energy maps, exported as WAsP Wind Resource Grids
- MERRA2 reanalysis download, import and MCP to long-term distributions
- Ice throw, shadow flicker and exceedance (P-value) simulations
- Single-slot background scheduler with progress, cancellation and rollback

Modules:
    core: Foundation (errors, progress, cancellation, geo/solar math, scheduler)
    model: Data structures (snapshot, mets, turbines, maps, requests, results)
    providers: Files and services (project database, rasters, MERRA2 client)
    simulators: Monte Carlo and time-stepping models (ice, shadow, exceedance)
    stages: One runner per long-running stage kind

Example:
    from windresource.core.scheduler import TaskScheduler
    from windresource.model import DomainSnapshot, MetCalcsParams
    from windresource.providers import ProjectStore
"""
