# examples/quickstart.py
import logging

import numpy as np
import dexcompare as dx

logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

# --- make a toy counts matrix (genes x samples) ---
genes = [f"gene{i+1}" for i in range(500)]
samples = [f"S{i+1:02d}" for i in range(6)]
rng = np.random.default_rng(1)
mu = np.full((len(genes), len(samples)), 50.0)
mu[:25, :3] *= 4  # first 25 genes up in the treated samples
size = 10.0
counts = rng.negative_binomial(size, size / (size + mu))

cm = dx.CountMatrix(counts, gene_ids=genes, sample_ids=samples)
groups = dx.SampleGroup(dict(zip(samples, ["treated"] * 3 + ["control"] * 3)))

# --- both engines, q-values and concordance in one call ---
result = dx.run_pipeline(cm, groups, prior_n=10, q_threshold=0.05)

print(f"common dispersion: {result.dispersion.common:.4f} (BCV {result.dispersion.bcv:.3f})")
for engine in ("exact", "moderated_t"):
    print(f"{engine}: pi0={result.pi0(engine):.3f}, {len(result.significant_genes(engine))} genes at q<=0.05")
    print(result.table(engine, n=5))

print(result.concordance.to_frame())
print(f"{result.concordance.percent_a_in_b:.1f}% of exact-test calls confirmed by the moderated t-test")
print(f"top-20 overlap: {sorted(result.top_overlap)}")

# --- stage by stage through the accessors ---
import dexcompare.edger  # noqa: E402,F401  registers cm.edger
import dexcompare.limma  # noqa: E402,F401  registers cm.limma

norm = cm.edger.calc_norm_factors()
disp = cm.edger.estimate_disp(groups, norm, prior_n=0)
print(dx.edger.top_tags(cm.edger.exact_test(groups, disp, norm), n=5))

model = dx.limma.lm_fit(cm.limma.voom(groups, norm)).e_bayes()
print(model.top_table(n=5))

# --- or from a BiocPy SummarizedExperiment ---
se = cm.to_summarized_experiment(groups=groups, group_column="condition")
cm2 = dx.CountMatrix.from_summarized_experiment(se)
groups2 = dx.SampleGroup.from_column_data(se, "condition")
print(dx.run_pipeline(cm2, groups2).concordance)
