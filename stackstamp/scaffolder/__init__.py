"""stackstamp scaffolder -- templating and generation machinery.

Takes a resolved ``ConfigContext`` and renders the packaged template corpus
into a Next.js + Prisma project (tRPC or GraphQL, Vercel or Heroku), or runs
one of the registered generators against an already scaffolded project.

Quick usage::

    from stackstamp.scaffolder import ProjectGenerator, plan, resolve_config

    config = resolve_config("my-app", flags={"apiStyle": "graphql"})
    rendered = await ProjectGenerator(config).render()
    write_plan = plan(rendered, "./my-app")
"""

from stackstamp.scaffolder.generator import ProjectGenerator
from stackstamp.scaffolder.insertion import GenerationRecord, InsertionPoint
from stackstamp.scaffolder.materializer import Materializer, materialize, plan
from stackstamp.scaffolder.options import ConfigContext, load_config, resolve_config
from stackstamp.scaffolder.registry import GeneratorRunner, GeneratorSpec, load_registry
from stackstamp.scaffolder.templates import TemplateRenderer

__all__ = [
    "ConfigContext",
    "GenerationRecord",
    "GeneratorRunner",
    "GeneratorSpec",
    "InsertionPoint",
    "Materializer",
    "ProjectGenerator",
    "TemplateRenderer",
    "load_config",
    "load_registry",
    "materialize",
    "plan",
    "resolve_config",
]
