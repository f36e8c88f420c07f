# teststate_suite.py
# Example suite: an extension repo built up phase by phase in one shared
# environment, plus feature checks that each get their own copy of it.
from __future__ import annotations

from teststate.dsl import chain, independent, sequential, sh, suite as make_suite


def suite():
    return make_suite(
        *chain(
            # Phase 1 - lay down the project skeleton
            sequential(
                "01-clone",
                sh("Create project", "mkdir -p src test && echo 'EXTENSION = demo' > Makefile"),
            ),
            # Phase 2 - add metadata on top of the skeleton
            sequential(
                "02-meta",
                sh("Write META.json", "printf '{\"name\": \"demo\", \"version\": \"0.1.0\"}' > META.json"),
                sh("Check skeleton", "test -f Makefile"),
            ),
            # Phase 3 - build a distribution from everything above
            sequential(
                "03-dist",
                sh("Package", "tar -czf ../demo-0.1.0.tar.gz Makefile META.json src test"),
            ),
        ),

        # Needs the repo as of 02-meta, works on its own copy of it
        independent(
            "doc",
            sh("Generate docs", "mkdir -p doc && cp META.json doc/index.json"),
            needs="02-meta",
            seed="sequential",
        ),

        # No prerequisites, nothing shared
        independent(
            "lint",
            sh("Shell available", "command -v sh"),
        ),
    )
